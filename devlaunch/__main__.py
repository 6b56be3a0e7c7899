from devlaunch.main import main

main()
